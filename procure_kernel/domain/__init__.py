"""Pure domain types: roles, values, workflow tables, clock."""
