"""Program engines: cycles, plan reconciliation, commissions and sales import."""
