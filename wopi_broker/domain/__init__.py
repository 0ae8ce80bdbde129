"""Broker domain: token and credential models, collaborator interfaces, errors."""
