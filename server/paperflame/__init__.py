"""
PaperFlame backend package.

A FastAPI service where freelancers track expenses and invoices, with a
Redis-fed worker that backs every record up to S3-compatible storage.
"""
