"""Health endpoint, TLS setup and conversion of stored models to API objects."""