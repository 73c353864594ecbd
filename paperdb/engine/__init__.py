"""PaperDB Engine — Collections, the database root, config, logging, errors."""
