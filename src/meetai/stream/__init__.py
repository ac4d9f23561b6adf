"""Call provider integration -- video call provisioning and chat channels.

Both APIs authenticate with the same server-side HS256 token signed with
the provider API secret, and take the API key as a query parameter.
"""
