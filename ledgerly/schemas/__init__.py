"""
Pydantic schemas for the Ledgerly backend.

Request and response contracts for the HTTP layer, plus the scoped edit
types consumed by the recurring-transaction service.
"""
