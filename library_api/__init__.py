"""Library API package.

- config: settings loaded from the environment
- database: engines and sessions for the directory and the catalog
- models: User, Loan and Book records
- ledger: borrow / return / renew workflow
- routes: HTTP endpoints
"""
