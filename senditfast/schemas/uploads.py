from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class UploadCreateRequest(BaseModel):
    file_name: str = Field(alias="fileName", min_length=1)
    file_size: int = Field(alias="fileSize")
    content_type: str = Field("application/octet-stream", alias="contentType")

    model_config = ConfigDict(populate_by_name=True)


class UploadCreateResponse(BaseModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    part_urls: list[str] = Field(alias="partUrls")
    part_size: int = Field(alias="partSize")

    model_config = ConfigDict(populate_by_name=True)


class PartUrlRequest(BaseModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    part_number: int = Field(alias="partNumber")

    model_config = ConfigDict(populate_by_name=True)


class CompletedPartIn(BaseModel):
    part_number: int = Field(validation_alias=AliasChoices("PartNumber", "partNumber", "part_number"))
    etag: str = Field(validation_alias=AliasChoices("ETag", "etag"))


class UploadCompleteRequest(BaseModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    parts: list[CompletedPartIn]

    model_config = ConfigDict(populate_by_name=True)


class UploadAbortRequest(BaseModel):
    upload_id: str = Field(alias="uploadId")
    key: str

    model_config = ConfigDict(populate_by_name=True)
