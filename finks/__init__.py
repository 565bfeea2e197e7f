"""finks: single-host application deployment on Docker, routed by Traefik.

Keeps three things consistent:
 - declared state (apps.json under the data directory)
 - observed state (containers and networks in the local Docker engine)
 - routing (Traefik labels attached to each container at creation)

Every command runs once, synchronously, under a deadline.
"""

__version__ = "0.3.0"
