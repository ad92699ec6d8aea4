"""
Updater package — reads PPP service rows for a device from the billing
database (PostgreSQL) and replaces the router's ``/ppp secret`` table with
them over SSH.

Every run erases all secrets on the router and re-adds the active services,
each step in its own SSH session.  The database is only ever read.
"""
