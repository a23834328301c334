"""
Dataverse Data Retrieval Tools

Deterministic reads from (and report uploads to) Dynamics 365 through the
Dataverse Web API.

This module handles:
1. Azure AD client-credentials authentication
2. OData queries with paging
3. Lookup, geography-mapping and option-set resolution
4. Chunked file upload of finished reports
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Iterable, Tuple

import requests

from config.settings import AppConfig, CrmConfig, ReportConfig, get_config
from crm_reporter.core.error_taxonomy import FatalConnectionError, RecoverableFetchError
from crm_reporter.data.records import EntityReference, RawProductRecord
from crm_reporter.data.user_hierarchy import UserFilter, UserRecord

logger = logging.getLogger(__name__)

# Logical name -> Web API entity set name
ENTITY_SETS: Dict[str, str] = {
    "systemuser": "systemusers",
    "lead": "leads",
    "opportunity": "opportunities",
    "account": "accounts",
    "salesorder": "salesorders",
    "principalobjectaccess": "principalobjectaccessset",
    "zox_prelead": "zox_preleads",
    "zox_productcode": "zox_productcodes",
    "zox_project": "zox_projects",
    "zox_purchaseorder": "zox_purchaseorders",
    "zox_regionmaster": "zox_regionmasters",
    "zox_opportunityproduct": "zox_opportunityproducts",
    "zox_leadgeographymapping": "zox_leadgeographymappings",
}

# RawProductRecord attribute -> (lookup column, default target table)
PRODUCT_LOOKUPS: Dict[str, Tuple[str, str]] = {
    "owner": ("ownerid", "systemuser"),
    "created_by": ("createdby", "systemuser"),
    "lead": ("zox_lead", "lead"),
    "pre_lead": ("zox_prelead", "zox_prelead"),
    "opportunity": ("zox_opportunity", "opportunity"),
    "product": ("zox_product", "zox_productcode"),
    "project": ("zox_project_", "zox_project"),
    "contractor": ("zox_contractor_", "account"),
    "po_number": ("zox_ponumber", "zox_purchaseorder"),
    "so_number": ("zox_sonumber", "salesorder"),
}

PRODUCT_COLUMNS = [
    "zox_opportunityproductid", "zox_name", "zox_lob", "zox_productstatus",
    "createdon", "zox_potential_",
]

# Option sets defined on the table itself; everything else is global
LOCAL_OPTION_SET_ATTRIBUTES = {"zox_productstatus"}

GEOGRAPHY_MAPPING_ENTITY = "zox_leadgeographymapping"
GEOGRAPHY_REGION_COLUMN = "zox_region"
REGION_ENTITY = "zox_regionmaster"

LOOKUP_ANNOTATION = "@Microsoft.Dynamics.CRM.lookuplogicalname"

# Ids per In(...) filter, keeps request URLs well under the 32k limit
ID_BATCH_SIZE = 100

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def entity_set_name(logical_name: str) -> str:
    return ENTITY_SETS.get(logical_name, f"{logical_name}s")


def lookup_column(attribute: str) -> str:
    """Web API name of a lookup column's value property."""
    return f"_{attribute}_value"


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an OData timestamp ("2024-03-01T10:00:00Z") into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal(0)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Unparseable amount {value!r}; using 0")
        return Decimal(0)


def in_filter(attribute: str, values: Iterable[Any]) -> str:
    """Build a Microsoft.Dynamics.CRM.In filter clause."""
    quoted = ",".join(f"'{v}'" for v in values)
    return f"Microsoft.Dynamics.CRM.In(PropertyName='{attribute}',PropertyValues=[{quoted}])"


def _batched(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DataverseAuthenticator:
    """
    Azure AD authentication handler.

    Implements the OAuth 2.0 client-credentials flow for the Dataverse
    resource, caching the token until shortly before it expires.
    """

    def __init__(self, config: CrmConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    def get_access_token(self) -> str:
        """Get valid access token, refreshing if necessary."""
        if self._is_token_valid():
            return self._access_token

        return self._refresh_token()

    def _is_token_valid(self) -> bool:
        """Check if current token is still valid."""
        if not self._access_token or not self._token_expiry:
            return False
        # Add 5 minute buffer
        return datetime.now(timezone.utc) < (self._token_expiry - timedelta(minutes=5))

    def _refresh_token(self) -> str:
        """Obtain new access token from Azure AD."""
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": f"{self.config.url}/.default",
        }

        try:
            response = self._session.post(
                self.config.token_url, data=payload, timeout=self.config.timeout_seconds
            )
            response.raise_for_status()

            token_data = response.json()
            self._access_token = token_data["access_token"]
            expires_in = int(token_data.get("expires_in", 3600))
            self._token_expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

            logger.info("Azure AD access token refreshed successfully")
            return self._access_token

        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error(f"Azure AD authentication failed: {e}")
            raise AuthenticationError(f"Failed to authenticate with Azure AD: {e}")


class DataverseWebApiClient:
    """
    Dataverse Web API client.

    Thin OData layer: GET with paging, single-record retrieve, PATCH.
    All transport errors surface as DataRetrievalError.
    """

    def __init__(self, config: CrmConfig, session: Optional[requests.Session] = None,
                 authenticator: Optional[DataverseAuthenticator] = None):
        self.config = config
        self.base_url = config.api_base_url
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
            "Prefer": 'odata.include-annotations="*"',
        })
        self.authenticator = authenticator or DataverseAuthenticator(config, self._session)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {self.authenticator.get_access_token()}"

        try:
            response = self._session.request(
                method, url, headers=headers, timeout=self.config.timeout_seconds, **kwargs
            )
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            logger.error(f"Web API {method} {url} failed: {e}")
            raise DataRetrievalError(f"Dataverse request failed: {e}", context={"url": url})

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._request("GET", path, params=params).json()

    def get_all(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """GET a collection, following @odata.nextLink until exhausted."""
        items: List[Dict[str, Any]] = []
        payload = self.get(path, params)
        items.extend(payload.get("value", []))

        next_link = payload.get("@odata.nextLink")
        while next_link:
            payload = self._request("GET", next_link).json()
            items.extend(payload.get("value", []))
            next_link = payload.get("@odata.nextLink")

        return items

    def retrieve(self, logical_name: str, record_id: str, columns: List[str]) -> Dict[str, Any]:
        """Retrieve one record by id with the given columns."""
        path = f"{entity_set_name(logical_name)}({record_id})"
        return self.get(path, {"$select": ",".join(columns)})

    def patch(self, url: str, **kwargs) -> requests.Response:
        return self._request("PATCH", url, **kwargs)


class DataverseGateway:
    """
    High-level interface for the report run's record-store needs.

    This is the object the hierarchy, cache and aggregator talk to.
    Returns plain records; raises DataRetrievalError on any failed read and
    FatalConnectionError when the organization cannot be reached.
    """

    def __init__(self, config: Optional[CrmConfig] = None, report_config: Optional[ReportConfig] = None,
                 client: Optional[DataverseWebApiClient] = None):
        app_config = get_config() if config is None or report_config is None else None
        self.config = config or app_config.crm
        self.report_config = report_config or app_config.report
        self.client = client or DataverseWebApiClient(self.config)
        self._option_sets: Dict[Tuple[str, str], Dict[int, str]] = {}

    def check_connection(self) -> str:
        """
        Verify the organization is reachable and the credentials work.

        Returns:
            The id of the calling (application) user
        """
        if not self.config.is_complete:
            raise FatalConnectionError(
                "CRM connection settings are incomplete (CRM_URL, CRM_TENANT_ID, "
                "CRM_CLIENT_ID, CRM_CLIENT_SECRET)"
            )
        try:
            who = self.client.get("WhoAmI")
        except DataRetrievalError as e:
            raise FatalConnectionError(f"CRM connection failed: {e}")
        logger.info(f"Connected to CRM successfully as {who.get('UserId')}")
        return who.get("UserId", "")

    def fetch_users(self, criteria: UserFilter) -> List[UserRecord]:
        """Fetch the users matching segment, LOB and role set."""
        params = {
            "$select": ",".join([
                "systemuserid", "fullname", "zox_segment", "zox_lob", "zox_role",
                "internalemailaddress", lookup_column("parentsystemuserid"),
            ]),
            "$filter": (
                f"zox_segment eq {criteria.segment} and zox_lob eq {criteria.lob} and "
                f"{in_filter('zox_role', criteria.roles)}"
            ),
        }
        items = self.client.get_all(entity_set_name("systemuser"), params)
        return [self._parse_user(item) for item in items]

    def fetch_shared_product_ids(self, user_id: str) -> List[str]:
        """Ids of product records shared with the user (any access right)."""
        params = {
            "$select": lookup_column("objectid"),
            "$filter": (
                f"{lookup_column('principalid')} eq {user_id} and "
                f"objecttypecode eq '{self.report_config.product_entity}' and "
                f"accessrightsmask gt 0"
            ),
        }
        items = self.client.get_all(entity_set_name("principalobjectaccess"), params)
        ids = []
        for item in items:
            object_id = item.get(lookup_column("objectid")) or item.get("objectid")
            if object_id:
                ids.append(object_id)
        return ids

    def fetch_products(self, ids: List[str], lob: int) -> List[RawProductRecord]:
        """Fetch product records by id, restricted to one line of business."""
        columns = PRODUCT_COLUMNS + [lookup_column(col) for col, _ in PRODUCT_LOOKUPS.values()]
        entity_set = entity_set_name(self.report_config.product_entity)
        products: List[RawProductRecord] = []

        for batch in _batched(list(ids), ID_BATCH_SIZE):
            params = {
                "$select": ",".join(columns),
                "$filter": f"{in_filter('zox_opportunityproductid', batch)} and zox_lob eq {lob}",
            }
            products.extend(self._parse_product(item) for item in self.client.get_all(entity_set, params))

        return products

    def fetch_geography_mappings(self, entity_kind: str, entity_id: str) -> List[EntityReference]:
        """Region references of the geography mappings pointing at an entity."""
        region_column = lookup_column(GEOGRAPHY_REGION_COLUMN)
        params = {
            "$select": region_column,
            "$filter": f"{lookup_column(entity_kind)} eq {entity_id}",
        }
        items = self.client.get_all(entity_set_name(GEOGRAPHY_MAPPING_ENTITY), params)
        return [
            EntityReference(REGION_ENTITY, item[region_column])
            for item in items
            if item.get(region_column)
        ]

    def resolve_entity_field(self, entity_kind: str, record_id: str, field_name: str) -> Optional[str]:
        """Value of one column of one record."""
        record = self.client.retrieve(entity_kind, record_id, [field_name])
        value = record.get(field_name)
        return None if value is None else str(value)

    def resolve_option_label(self, entity_kind: str, attribute: str, code: Optional[int]) -> str:
        """
        User-localized label of an option-set value.

        Option-set metadata is cached per (entity, attribute) for the
        gateway's lifetime; it does not depend on the user being reported.
        """
        if code is None:
            return "Open"
        key = (entity_kind, attribute)
        if key not in self._option_sets:
            self._option_sets[key] = self._fetch_option_set(entity_kind, attribute)
        return self._option_sets[key].get(int(code), "")

    def upload_report(self, user_id: str, file_name: str, content: bytes,
                      mime_type: str = XLSX_MIME_TYPE) -> None:
        """
        Upload a file to the user's file column in chunks.

        The first PATCH opens a chunked transfer and returns the upload
        location; each following PATCH sends one Content-Range block.
        """
        url = f"{entity_set_name('systemuser')}({user_id})/{self.report_config.file_attribute}"
        init = self.client.patch(url, headers={
            "x-ms-transfer-mode": "chunked",
            "x-ms-file-name": file_name,
        })
        location = init.headers.get("Location")
        if not location:
            raise DataRetrievalError("Chunked upload did not return a Location header",
                                     context={"user_id": user_id})
        chunk_size = int(init.headers.get("x-ms-chunk-size") or self.report_config.upload_chunk_size)

        total = len(content)
        blocks = 0
        for start in range(0, total, chunk_size):
            chunk = content[start:start + chunk_size]
            end = start + len(chunk) - 1
            self.client.patch(location, data=chunk, headers={
                "Content-Range": f"bytes {start}-{end}/{total}",
                "Content-Type": mime_type,
                "x-ms-file-name": file_name,
            })
            blocks += 1

        logger.info(f"Uploaded {file_name} ({total} bytes, {blocks} block(s)) for user {user_id}")

    def _fetch_option_set(self, entity_kind: str, attribute: str) -> Dict[int, str]:
        if attribute in LOCAL_OPTION_SET_ATTRIBUTES:
            path = (
                f"EntityDefinitions(LogicalName='{entity_kind}')/"
                f"Attributes(LogicalName='{attribute}')/"
                f"Microsoft.Dynamics.CRM.PicklistAttributeMetadata"
            )
            payload = self.client.get(path, {"$select": "LogicalName", "$expand": "OptionSet($select=Options)"})
            options = (payload.get("OptionSet") or {}).get("Options", [])
        else:
            payload = self.client.get(f"GlobalOptionSetDefinitions(Name='{attribute}')")
            options = payload.get("Options", [])

        labels: Dict[int, str] = {}
        for option in options:
            label = ((option.get("Label") or {}).get("UserLocalizedLabel") or {}).get("Label")
            labels[int(option["Value"])] = label or ""
        logger.debug(f"Loaded {len(labels)} option(s) for {entity_kind}.{attribute}")
        return labels

    @staticmethod
    def _lookup(item: Dict[str, Any], column: str, default_target: str) -> Optional[EntityReference]:
        value = item.get(lookup_column(column))
        if not value:
            return None
        target = item.get(f"{lookup_column(column)}{LOOKUP_ANNOTATION}") or default_target
        return EntityReference(target, value)

    def _parse_user(self, item: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            user_id=item["systemuserid"],
            full_name=item.get("fullname") or "N/A",
            email=item.get("internalemailaddress") or "",
            segment=item.get("zox_segment") if item.get("zox_segment") is not None else -1,
            lob=item.get("zox_lob") if item.get("zox_lob") is not None else -1,
            role=item.get("zox_role") if item.get("zox_role") is not None else -1,
            manager_id=item.get(lookup_column("parentsystemuserid")) or None,
        )

    def _parse_product(self, item: Dict[str, Any]) -> RawProductRecord:
        lookups = {
            attribute: self._lookup(item, column, target)
            for attribute, (column, target) in PRODUCT_LOOKUPS.items()
        }
        return RawProductRecord(
            product_id=item["zox_opportunityproductid"],
            name=item.get("zox_name") or "",
            created_on=parse_datetime(item.get("createdon")),
            potential=parse_decimal(item.get("zox_potential_")),
            status=item.get("zox_productstatus"),
            lob=item.get("zox_lob"),
            **lookups,
        )


# Custom exceptions
class AuthenticationError(FatalConnectionError):
    """Raised when authentication fails."""
    pass

class DataRetrievalError(RecoverableFetchError):
    """Raised when data retrieval fails."""
    pass


# Factory function
def get_crm_gateway(config: Optional[AppConfig] = None) -> DataverseGateway:
    """Factory function to get a gateway configured from the environment."""
    config = config or get_config()
    return DataverseGateway(config.crm, config.report)
