"""
Run the Ledgerly API locally with auto-reload.

Prints the recurring-transaction endpoints and example requests, then starts
uvicorn on port 8000.
"""

import uvicorn

if __name__ == "__main__":
    print("=" * 60)
    print("Starting Ledgerly Backend")
    print("=" * 60)
    print()
    print("API Endpoints:")
    print("   - Health Check:     GET   http://localhost:8000/health")
    print("   - Transactions:     GET   http://localhost:8000/transactions?start_date=2024-01-01&end_date=2024-01-31")
    print("   - Recurring rules:  POST  http://localhost:8000/recurring-transactions")
    print("   - Materialize:      POST  http://localhost:8000/recurring-transactions/materialize")
    print("   - Scoped edit:      PATCH http://localhost:8000/transactions/{id}/recurrence")
    print("   - Skip occurrence:  POST  http://localhost:8000/transactions/{id}/skip")
    print("   - API Docs:               http://localhost:8000/docs")
    print()
    print("Authentication:")
    print("   All endpoints (except /health) require:")
    print("   Authorization: Bearer <supabase access token>")
    print()
    print("Example:")
    print('   curl -X PATCH "http://localhost:8000/transactions/rtx_<rule>_2024-01-15/recurrence" \\')
    print('     -H "Authorization: Bearer $TOKEN" -H "Content-Type: application/json" \\')
    print('     -d \'{"scope": "this-and-future", "changes": {"interval": 2}}\'')
    print()
    print("=" * 60)

    uvicorn.run(
        "ledgerly.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
