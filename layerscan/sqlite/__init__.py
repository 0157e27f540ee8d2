"""SQLite-backed datastore and its schema migrations."""