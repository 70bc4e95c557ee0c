"""Configuration, plugin registry, server instance and command line."""