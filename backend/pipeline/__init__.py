# pipeline/__init__.py
# Order/payment reconciliation pipeline: agents, errors and wiring
