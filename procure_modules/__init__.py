"""
Procurement Workflow Modules.

One sub-package per governed entity.  Each module contains:
- Domain models (frozen DTOs and status enums)
- ORM persistence (versioned rows)
- Workflows (state tables interpreted by the TransitionExecutor)
- A service facade owning the transaction boundary

Modules:
- sow: Statements of Work, client drafting through vendor response
- po: Purchase orders raised against accepted SOWs, with payment tracking
- invoice: Vendor invoices against accepted or active POs
- application_workflow: Configurable stepped approvals with escalation

Authority decisions live in procure_engines.authority; the modules only ask.
"""
