from enum import Enum


class ConnectorType(str, Enum):
    CONFLUENCE = "confluence"
    SHAREPOINT = "sharepoint"
    NOTION = "notion"
    GOOGLE_DRIVE = "google_drive"
    JIRA = "jira"
    SLACK = "slack"
    GITHUB = "github"
    ZENDESK = "zendesk"
    SERVICENOW = "servicenow"
    CUSTOM = "custom"


class ConnectorStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    SYNCING = "syncing"
    PENDING = "pending"


class AuthType(str, Enum):
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC = "basic"
    BEARER = "bearer"
    CUSTOM = "custom"


class SyncFrequency(str, Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"
