"""PaperDB Documents — wire models and the read-only Document reference."""
