"""Bearer-token authentication and route access policy."""
