from arraypoll.writer.base import Writer
from arraypoll.writer.json_writer import JsonWriter

__all__ = ["Writer", "JsonWriter"]
