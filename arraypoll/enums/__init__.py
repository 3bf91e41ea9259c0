"""
Vendor enum tables and canonical status translation.
"""

from arraypoll.enums.translator import EnumTranslator, default_table_path, load_enum_tables

__all__ = ['EnumTranslator', 'default_table_path', 'load_enum_tables']
