from mangum import Mangum

from lifecycle.api import app

handler = Mangum(app)
