"""HTTP middleware shared by all routers."""
