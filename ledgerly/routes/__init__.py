"""
API routes for the Ledgerly backend.

Routes stay thin: authenticate, build the RLS-scoped client, call a service,
map the result into a response model.
"""
