"""Test suite for the n8n stack tooling."""
