"""Domain name and IP address matchers."""