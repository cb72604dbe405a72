"""HTTP routers for the Busfahrer server."""
