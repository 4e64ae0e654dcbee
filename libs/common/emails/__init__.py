"""
Transactional email package.

Modules:
- client: EmailClient for sending templated emails through the
  Communications Service API
"""
