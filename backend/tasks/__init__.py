# tasks/__init__.py
# Background and startup tasks
