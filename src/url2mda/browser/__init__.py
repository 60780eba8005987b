"""Shared browser ownership.

- ``handle``    : ``BrowserHandleManager`` and the Playwright rendering backend
- ``lifecycle`` : idle keep-alive controller and its state stores
"""
