"""
纯 REST 家族：查询文本就是相对 base_url 的路径，方法来自调用方。
"""

from typing import Any, Dict

from hub.config_loader import AuthType, HttpMethod, QueryDef, SystemInstance
from hub.connectors.base import Connector
from hub.query_lang import QueryType

GET = HttpMethod.GET
POST = HttpMethod.POST


def _catalogue(*entries: tuple) -> tuple:
    return tuple(QueryDef(id=i, method=m, path=p, description=d) for i, m, p, d in entries)


class RestConnector(Connector):
    query_type = QueryType.REST

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        return await self.request(
            instance,
            method,
            query,
            params=opts.get("params") or None,
            json_body=opts.get("body"),
            headers=opts.get("headers") or None,
        )


class FortiGateConnector(RestConnector):
    system_name = "fortigate"
    display_name = "FortiGate"
    env_prefix = "FORTIGATE"
    fallback_url = "https://192.168.1.1"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "X-API-Key"
    probe_path = "/api/v2/monitor/system/status"
    default_queries = _catalogue(
        ("systemStatus", GET, "/api/v2/monitor/system/status", "System status and version"),
        ("listPolicies", GET, "/api/v2/monitor/firewall/policy", "Firewall policies"),
        ("listAddresses", GET, "/api/v2/monitor/firewall/address", "Address objects"),
        ("listInterfaces", GET, "/api/v2/cmdb/system/interface", "Network interfaces"),
        ("ipsecStatus", GET, "/api/v2/monitor/system/vpn/ipsec", "IPsec VPN status"),
        ("haStatus", GET, "/api/v2/monitor/system/ha/status", "High Availability status"),
        ("routeTable", GET, "/api/v2/monitor/router/ipv4", "Routing table (IPv4)"),
        ("sessionCount", GET, "/api/v2/monitor/firewall/session", "Current session count"),
        ("topSessions", GET, "/api/v2/monitor/firewall/top/sessions", "Top bandwidth sessions"),
        ("licenseInfo", GET, "/api/v2/monitor/system/license/status", "License information"),
    )


class PaloAltoConnector(RestConnector):
    system_name = "paloalto"
    display_name = "Palo Alto Networks"
    env_prefix = "PALOALTO"
    fallback_url = "https://paloalto.example.com"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "X-PAN-KEY"
    probe_path = "/restapi/9.0/system"
    default_queries = _catalogue(
        ("systemInfo", GET, "/restapi/9.0/system", "System info & version"),
        ("listPolicies", GET, "/restapi/9.0/Policies/SecurityRules", "Security policies"),
        ("sessionCount", GET, "/restapi/9.0/Operational/GetSessions", "Current session stats"),
        ("threatSummary", GET, "/restapi/9.0/Operational/GetThreats", "Threat log summary"),
        ("interfaceStats", GET, "/restapi/9.0/Operational/GetInterfaces", "Interface statistics"),
        ("routingTable", GET, "/restapi/9.0/Operational/GetRouting", "Routing table"),
        ("listAddresses", GET, "/restapi/9.0/Objects/Addresses", "Address objects"),
        ("listAddressGroups", GET, "/restapi/9.0/Objects/AddressGroups", "Address groups"),
        ("listServices", GET, "/restapi/9.0/Objects/Services", "Service objects"),
        ("licenseInfo", GET, "/api/?type=op&cmd=<request><license><info></info></license></request>", "License information"),
    )


class VMwareConnector(RestConnector):
    system_name = "vmware"
    display_name = "VMware vCenter"
    env_prefix = "VMWARE"
    fallback_url = "https://vcenter.example.com"
    default_auth_type = AuthType.BEARER
    probe_path = "/rest/vcenter/host"
    default_queries = _catalogue(
        ("listVms", GET, "/rest/vcenter/vm", "List all virtual machines"),
        ("getVm", GET, "/rest/vcenter/vm/{vmId}", "Get details for a specific VM"),
        ("listHosts", GET, "/rest/vcenter/host", "List all ESXi hosts"),
        ("getVmPower", GET, "/rest/vcenter/vm/{vmId}/power", "Get power status of a VM"),
        ("powerOnVm", POST, "/rest/vcenter/vm/{vmId}/power/start", "Power on a VM"),
        ("powerOffVm", POST, "/rest/vcenter/vm/{vmId}/power/stop", "Power off a VM"),
        ("listDatastores", GET, "/rest/vcenter/datastore", "List all datastores"),
        ("listClusters", GET, "/rest/vcenter/cluster", "List all clusters"),
        ("getVmHardware", GET, "/rest/vcenter/vm/{vmId}/hardware", "Get hardware info for a VM"),
        ("listTasks", GET, "/rest/com/vmware/cis/task", "List recent tasks / events"),
    )

    def extra_headers(self, instance: SystemInstance) -> Dict[str, str]:
        # vCenter REST 使用 session id header，Authorization 作为兜底
        token = getattr(instance.auth, "token", None) or getattr(instance.auth, "access_token", None)
        return {"vmware-api-session-id": token} if token else {}


class CarbonBlackConnector(RestConnector):
    system_name = "carbonblack"
    display_name = "Carbon Black Cloud"
    env_prefix = "CARBONBLACK"
    fallback_url = "https://defense.conferdeploy.net"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "X-Auth-Token"
    default_queries = _catalogue(
        ("listDevices", GET, "/appservices/v6/orgs/{orgKey}/devices/_search", "List all devices"),
        ("deviceSummary", GET, "/appservices/v6/orgs/{orgKey}/devices/{deviceId}", "Device summary info"),
        ("listAlerts", GET, "/appservices/v6/orgs/{orgKey}/alerts/_search", "Security alerts"),
        ("listPolicies", GET, "/appservices/v6/orgs/{orgKey}/policies", "Prevention policies"),
        ("policyDetails", GET, "/appservices/v6/orgs/{orgKey}/policies/{policyId}", "Policy details"),
        ("topThreats", GET, "/threathunter/v2/orgs/{orgKey}/threats/_search", "Top threats"),
        ("eventSearch", POST, "/enterprise-response/v2/orgs/{orgKey}/events/_search", "Search events"),
        ("queryProcess", POST, "/enterprise-response/v2/orgs/{orgKey}/processes/_search", "Search processes"),
        ("liveResponse", POST, "/live-response", "Initiate Live Response session"),
        ("licenseInfo", GET, "/appservices/v6/orgs/{orgKey}/license", "License usage"),
    )

    def extra_headers(self, instance: SystemInstance) -> Dict[str, str]:
        token = getattr(instance.auth, "token", None)
        return {"X-Auth-Token": token} if token else {}


class SysdigConnector(RestConnector):
    system_name = "sysdig"
    display_name = "Sysdig Secure"
    env_prefix = "SYSDIG"
    fallback_url = "https://secure.sysdig.com"
    default_auth_type = AuthType.BEARER
    probe_path = "/api/agents"
    default_queries = _catalogue(
        ("listAgents", GET, "/api/agents", "List Sysdig agents"),
        ("listPolicies", GET, "/api/policies", "Security policies"),
        ("policyEvents", GET, "/api/events/policies", "Policy events"),
        ("hostSummary", GET, "/api/data/host", "Host metrics summary"),
        ("containerSummary", GET, "/api/data/container", "Container metrics summary"),
        ("topProcesses", GET, "/api/data/processes", "Top processes by CPU"),
        ("captures", GET, "/api/captures", "Sysdig captures"),
        ("alerts", GET, "/api/alerts", "Active alerts"),
        ("teams", GET, "/api/teams", "Teams configured"),
        ("licenseUsage", GET, "/api/license/usage", "License usage"),
    )


class VeeamConnector(RestConnector):
    system_name = "veeam"
    display_name = "Veeam Backup & Replication"
    env_prefix = "VEEAM"
    fallback_url = "https://veeam.example.com:9398"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "X-RestSvcSessionId"
    probe_path = "/api/serverInfo"
    default_queries = _catalogue(
        ("serverInfo", GET, "/api/serverInfo", "Server information"),
        ("listJobs", GET, "/api/jobs", "Backup jobs"),
        ("jobSessions", GET, "/api/jobSessions", "Job sessions"),
        ("repositories", GET, "/api/backupRepositories", "Backup repositories"),
        ("restorePoints", GET, "/api/restorePoints", "Restore points"),
        ("alarms", GET, "/api/alarms", "Active alarms"),
        ("protectedVMs", GET, "/api/protectedVMs", "Protected virtual machines"),
        ("unprotectedVMs", GET, "/api/unprotectedVMs", "Unprotected virtual machines"),
        ("capacityPlan", GET, "/api/capacityPlan", "Capacity planning"),
        ("licenseInfo", GET, "/api/licenses", "License information"),
    )


class ConfluenceConnector(RestConnector):
    system_name = "confluence"
    display_name = "Confluence"
    env_prefix = "CONFLUENCE"
    fallback_url = "https://confluence.example.com"
    default_auth_type = AuthType.BASIC
    probe_path = "/wiki/rest/api/space"
    default_queries = _catalogue(
        ("listSpaces", GET, "/wiki/rest/api/space", "List spaces"),
        ("getSpace", GET, "/wiki/rest/api/space/{spaceKey}", "Get space details"),
        ("listPages", GET, "/wiki/rest/api/content?type=page&spaceKey={spaceKey}", "Pages in a space"),
        ("getPage", GET, "/wiki/rest/api/content/{pageId}", "Page content"),
        ("listBlogs", GET, "/wiki/rest/api/content?type=blogpost", "Blog posts"),
        ("searchContent", GET, "/wiki/rest/api/search?cql={cql}", "CQL search"),
        ("recentUpdates", GET, "/wiki/rest/api/audit?offset=0&limit=20", "Recent updates audit"),
        ("attachments", GET, "/wiki/rest/api/content/{pageId}/child/attachment", "Page attachments"),
        ("labels", GET, "/wiki/rest/api/content/{pageId}/label", "Page labels"),
        ("licenseInfo", GET, "/wiki/rest/api/license", "License information"),
    )
