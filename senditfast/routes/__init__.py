from .admin import router as admin
from .share import router as share
from .tracking import router as tracking
from .transfers import router as transfers
from .uploads import router as uploads
