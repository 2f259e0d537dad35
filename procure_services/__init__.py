"""
Procurement Services -- coordinators above the modules.

Submodules are imported explicitly (``procure_services.transition_executor``,
``procure_services.escalation_sweep``, ``procure_services.audit_export``,
``procure_services.dispatcher``, ``procure_services.responses``); this
package imports nothing eagerly because the entity services import the
executor from here.
"""
