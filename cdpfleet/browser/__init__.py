"""
Browser agents for cdpfleet.

Playwright-driven execution of scripted agents against running Chromium
instances:
- Connection providers (connect_over_cdp) and endpoint health checks
- Typed task steps: navigate, extract text, page stats, screenshot capture
- ExecutionUnit, which turns one agent's run into a Success or Failure
"""
