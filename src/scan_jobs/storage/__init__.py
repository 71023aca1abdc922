"""SQLite persistence for scan jobs and their result records."""
