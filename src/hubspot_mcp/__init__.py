"""HubSpot MCP server: OAuth token broker and read-only CRM proxy."""
