"""PaperDB Types — TypedObject converters, the converter registry and built-in types."""
