"""Runtime collaborators: command runner, provider registry, sessions and the manager."""
