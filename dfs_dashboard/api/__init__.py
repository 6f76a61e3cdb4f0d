"""REST gateway for the storage dashboard runtime."""
