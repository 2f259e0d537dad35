"""
Module ORM Registry (``procure_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
contains its table before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``procure_kernel.db.engine.create_tables``; nothing else in the kernel may
import it.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``procure_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import procure_kernel.models  # noqa: F401
    # fmt: off
    import procure_modules.application_workflow.orm  # noqa: F401
    import procure_modules.invoice.orm  # noqa: F401
    import procure_modules.po.orm  # noqa: F401
    import procure_modules.sow.orm  # noqa: F401
    # fmt: on
