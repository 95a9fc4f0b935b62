"""
MacBridge Agent CLI - Command-line interface for the build agent.

Commands:
- start: Start the agent polling loop
- run: Execute a single build job locally
- config: Show and edit the agent configuration
- self-test: Verify configuration, toolchain and connectivity
"""
