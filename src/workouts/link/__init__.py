"""Duplex handheld/companion link.

Modules:
    messages       — Request / Reply / Event variants and the flat wire codec
    payloads       — Pydantic schemas for message parameters
    transport      — LinkTransport ABC and its delegate callbacks
    loopback       — Paired in-process transports
    http_transport — Transport over HTTP (httpx client, FastAPI inbound router)
    channel        — LinkChannel: activation, reachability, pending queue, requests
"""
