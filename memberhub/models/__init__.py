# memberhub/models/__init__.py
from memberhub.db.base import Base  # noqa: F401

from . import user              # noqa: F401
from . import profile           # noqa: F401
from . import organization      # noqa: F401
from . import transfer_request  # noqa: F401
from . import notification      # noqa: F401
from . import audit_log         # noqa: F401
