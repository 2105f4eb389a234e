"""
Services

- session/ - Modbus session multiplexer, polling and the session service
"""
