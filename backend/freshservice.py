"""
Freshservice REST API client.

Covers the calls the application needs: listing agents for technician sync,
reading ticket form category choices, and creating, deleting and searching
tickets. Authentication is HTTP basic with the API token as username and "X"
as password.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from config import (
    FRESHSERVICE_API_TOKEN,
    FRESHSERVICE_CATEGORY_FIELD_ID,
    FRESHSERVICE_DOMAIN,
    FRESHSERVICE_PORTAL_URL,
    FRESHSERVICE_REQUESTER_EMAIL,
    FRESHSERVICE_WORKSPACE_ID,
)
from models import utcnow
from validation import parse_date

logger = logging.getLogger(__name__)

TICKET_PRIORITY_MEDIUM = 2
TICKET_STATUS_OPEN = 2
TICKET_SOURCE = 1001
PAGE_SIZE = 100
MAX_PAGES = 20


class FreshserviceError(Exception):
    """Raised for missing configuration or a failed Freshservice call."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


class FreshserviceClient:
    """
    Thin wrapper around the Freshservice v2 API.

    Args:
        domain: Freshservice host, e.g. "acme.freshservice.com"
        api_token: API key of the integration user
        portal_url: Base URL used for ticket links shown to users
        requester_email: Requester used for tickets created from tasks
        workspace_id: Workspace that agents and tickets belong to
        session: Optional requests session, replaceable in tests
    """

    def __init__(self, domain: str = FRESHSERVICE_DOMAIN,
                 api_token: str = FRESHSERVICE_API_TOKEN,
                 portal_url: str = FRESHSERVICE_PORTAL_URL,
                 requester_email: str = FRESHSERVICE_REQUESTER_EMAIL,
                 workspace_id: int = FRESHSERVICE_WORKSPACE_ID,
                 category_field_id: int = FRESHSERVICE_CATEGORY_FIELD_ID,
                 session: requests.Session = None,
                 timeout: float = 30):
        self.domain = domain
        self.api_token = api_token
        self.portal_url = (portal_url or (f"https://{domain}" if domain else "")).rstrip("/")
        self.requester_email = requester_email
        self.workspace_id = workspace_id
        self.category_field_id = category_field_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self.domain or not self.api_token:
            raise FreshserviceError(500, "Freshservice configuration missing")

        url = f"https://{self.domain}{path}"
        try:
            response = self.session.request(
                method,
                url,
                auth=(self.api_token, "X"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Freshservice request failed: {method} {path}: {e}")
            raise FreshserviceError(502, "Could not reach Freshservice", str(e))

        if not response.ok:
            logger.error(f"Freshservice returned {response.status_code} for {method} {path}: {response.text[:300]}")
            raise FreshserviceError(
                response.status_code,
                f"Freshservice API error: {response.status_code}",
                response.text
            )
        return response

    def ticket_url(self, ticket_id: Any) -> str:
        """Agent portal link for a ticket."""
        return f"{self.portal_url}/a/tickets/{ticket_id}"

    # -------------------------------------------------------------------------
    # Agents and categories
    # -------------------------------------------------------------------------

    def list_agents(self) -> List[Dict[str, Any]]:
        """
        Active full-time agents in the configured workspace.

        Returns:
            [{id, agentId, name, email, department_ids, location_id, location_name}]
        """
        agents = []
        for page in range(1, MAX_PAGES + 1):
            response = self._request(
                "GET",
                "/api/v2/agents",
                params={"active": "true", "state": "fulltime", "per_page": PAGE_SIZE, "page": page}
            )
            batch = response.json().get("agents", [])
            agents.extend(batch)
            if len(batch) < PAGE_SIZE:
                break

        results = []
        for agent in agents:
            if not agent.get("active", True):
                continue
            if self.workspace_id not in (agent.get("workspace_ids") or []):
                continue
            name = f"{agent.get('first_name') or ''} {agent.get('last_name') or ''}".strip()
            results.append({
                "id": agent.get("id"),
                "agentId": str(agent.get("id")),
                "name": name or agent.get("email") or str(agent.get("id")),
                "email": agent.get("email") or "",
                "department_ids": agent.get("department_ids") or [],
                "location_id": agent.get("location_id"),
                "location_name": agent.get("location_name"),
            })
        logger.info(f"Fetched {len(results)} Freshservice agents in workspace {self.workspace_id}")
        return results

    def list_categories(self) -> List[Dict[str, Any]]:
        """
        Choices of the ticket form category field.

        Returns:
            [{id: str, displayId: int, value: str}]
        """
        response = self._request("GET", "/api/v2/ticket_form_fields")
        fields = response.json().get("ticket_fields", [])

        field = next((f for f in fields if f.get("id") == self.category_field_id), None)
        if field is None:
            field = next((f for f in fields if (f.get("label") or "").lower() == "category"), None)
        if field is None:
            raise FreshserviceError(404, "Category field not found in Freshservice ticket form")

        return [
            {"id": str(choice.get("id")), "displayId": choice.get("display_id"), "value": choice.get("value")}
            for choice in field.get("choices") or []
            if choice.get("value")
        ]

    # -------------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------------

    def build_ticket_payload(self, subject: str, description: str,
                             responder_agent_id: Optional[str] = None,
                             due_date: Any = None,
                             category_name: Optional[str] = None,
                             now: datetime = None) -> Dict[str, Any]:
        """
        Ticket body for a task.

        The responder is set only for a positive numeric agent id, and due
        dates only when they lie in the future.
        """
        payload = {
            "description": description,
            "subject": subject,
            "email": self.requester_email,
            "priority": TICKET_PRIORITY_MEDIUM,
            "status": TICKET_STATUS_OPEN,
            "workspace_id": self.workspace_id,
            "source": TICKET_SOURCE,
            "custom_fields": {"security": category_name},
        }

        if responder_agent_id:
            try:
                agent_number = int(str(responder_agent_id).strip())
            except ValueError:
                agent_number = 0
            if agent_number > 0:
                payload["responder_id"] = agent_number
            else:
                logger.warning(f"Invalid agent ID format: {responder_agent_id}")

        due = parse_date(due_date) if due_date else None
        if due and due > (now or utcnow()):
            due_iso = due.strftime("%Y-%m-%dT%H:%M:%SZ")
            payload["due_by"] = due_iso
            payload["fr_due_by"] = due_iso

        return payload

    def create_ticket(self, subject: str, description: str, **options) -> Dict[str, Any]:
        """
        Create a ticket.

        Returns:
            {"ticketId": int, "ticketUrl": str, "ticket": {...}}
        """
        if not subject or not description:
            raise FreshserviceError(400, "Missing required fields")

        payload = self.build_ticket_payload(subject, description, **options)
        response = self._request("POST", "/api/v2/tickets", json=payload)
        ticket = response.json().get("ticket", {})
        ticket_id = ticket.get("id")
        logger.info(f"Created Freshservice ticket {ticket_id}")
        return {"ticketId": ticket_id, "ticketUrl": self.ticket_url(ticket_id), "ticket": ticket}

    def delete_ticket(self, ticket_id: Any) -> bool:
        """Delete a ticket."""
        self._request("DELETE", f"/api/v2/tickets/{ticket_id}")
        logger.info(f"Deleted Freshservice ticket {ticket_id}")
        return True

    def search_tickets(self, subject: str) -> List[Dict[str, Any]]:
        """
        Tickets whose subject equals the given one, ignoring case.

        Returns:
            [{id, subject, status, priority, createdAt, updatedAt, category, url}]
        """
        if not subject or not subject.strip():
            raise FreshserviceError(400, "Subject is required")

        wanted = subject.strip().lower()
        response = self._request(
            "GET",
            "/api/v2/tickets",
            params={"per_page": PAGE_SIZE, "order_type": "desc"}
        )
        results = []
        for ticket in response.json().get("tickets", []):
            if (ticket.get("subject") or "").strip().lower() != wanted:
                continue
            results.append({
                "id": ticket.get("id"),
                "subject": ticket.get("subject"),
                "status": ticket.get("status"),
                "priority": ticket.get("priority"),
                "createdAt": ticket.get("created_at"),
                "updatedAt": ticket.get("updated_at"),
                "category": (ticket.get("custom_fields") or {}).get("security") or ticket.get("category"),
                "url": self.ticket_url(ticket.get("id")),
            })
        return results
