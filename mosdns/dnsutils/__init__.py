"""Helpers for DNS messages: TTL handling, wire I/O and PTR names."""