"""
MCP Chat Gateway Test Suite

- services/: one module per pipeline component, driven by the in-memory
  tool server and scripted language model from conftest.py
- api/: the REST surface through TestClient with the lifespan running
- top level: domain models, service wiring and the command line
"""
