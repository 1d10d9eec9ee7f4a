"""
Query/control API over the email onebox service.
"""
