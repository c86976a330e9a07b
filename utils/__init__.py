"""Library App - Utilities Package

- Input validators (ISBN, email, phone, text)
- CLI output helpers
"""
