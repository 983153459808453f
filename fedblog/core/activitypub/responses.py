from fastapi.responses import ORJSONResponse


class ActivityJSONResponse(ORJSONResponse):
    media_type = "application/activity+json; charset=utf-8"


class JRDResponse(ORJSONResponse):
    media_type = "application/jrd+json; charset=utf-8"
