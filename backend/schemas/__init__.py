# schemas/__init__.py
# Order, delivery and gateway event models
