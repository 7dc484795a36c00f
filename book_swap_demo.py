#!/usr/bin/env python
"""
Book Swap Demo for the BookSwap platform

Walks two readers through a full swap (list, browse, request, approve,
complete) against the in-memory store, printing each step.
"""

import asyncio
import shutil

from bookswap.core.exceptions import BookSwapError
from bookswap.core.memory import InMemoryStore
from bookswap.schemas.book import BookCreate
from bookswap.schemas.swap import SwapDecision
from bookswap.services.catalog_service import CatalogService
from bookswap.services.notification_service import NotificationDispatcher
from bookswap.services.review_service import ReviewService
from bookswap.services.swap_service import SwapService

# ANSI color codes for terminal output
class Colors:
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    BG_BLUE = '\033[44m'
    BG_CYAN = '\033[46m'

READERS = {
    "alex": "Alex Johnson",
    "jamie": "Jamie Smith",
}

def print_header(text):
    """Print a formatted header"""
    terminal_width = shutil.get_terminal_size().columns
    print(f"\n{Colors.BG_BLUE}{Colors.BOLD}{text.center(terminal_width)}{Colors.ENDC}")

def print_section(text):
    """Print a formatted section header"""
    print(f"\n{Colors.YELLOW}{Colors.BOLD}=== {text} ==={Colors.ENDC}")

def print_book(book):
    print(f"\n{Colors.CYAN}{Colors.BOLD}📚 {book.title}{Colors.ENDC} by {book.author}")
    print(f"{Colors.GREEN}🏷️  Genres:{Colors.ENDC} {', '.join(book.genre)}")
    print(f"{Colors.GREEN}📖 Condition:{Colors.ENDC} {book.condition.value}")
    print(f"{Colors.GREEN}👤 Owner:{Colors.ENDC} {READERS.get(book.owner_id, book.owner_id)}")
    swap_state = getattr(book, "swap_state", None)
    if swap_state:
        print(f"{Colors.GREEN}🔘 Button:{Colors.ENDC} {swap_state.value}")

def print_swap(swap):
    status_colors = {
        "pending": Colors.YELLOW,
        "approved": Colors.GREEN,
        "completed": Colors.GREEN,
        "denied": Colors.RED,
        "cancelled": Colors.RED,
    }
    status_color = status_colors.get(swap.status.value, Colors.BLUE)
    print(f"\n{Colors.BG_CYAN}{Colors.BOLD} SWAP {swap.id[:8]} {Colors.ENDC}")
    print(f"{Colors.GREEN}👤 Requester:{Colors.ENDC} {READERS[swap.requester_id]}")
    print(f"{Colors.GREEN}👤 Owner:{Colors.ENDC} {READERS[swap.book_owner_id]}")
    print(f"{Colors.GREEN}📊 Status:{Colors.ENDC} {status_color}{swap.status.value.upper()}{Colors.ENDC}")

async def simulate_book_swap():
    store = InMemoryStore()
    notifications = NotificationDispatcher(store)
    catalog = CatalogService(store)
    swaps = SwapService(store, notifications)
    reviews = ReviewService(store)

    print_header(" 🔄 BOOKSWAP DEMONSTRATION 🔄 ")

    dune = await catalog.add_book(
        "alex", BookCreate(title="Dune", author="Frank Herbert", genre=["sci-fi", "classic"])
    )
    await catalog.add_book(
        "alex", BookCreate(title="Clean Code", author="Robert C. Martin", genre=["software"])
    )
    earthsea = await catalog.add_book(
        "jamie", BookCreate(title="A Wizard of Earthsea", author="Ursula K. Le Guin", genre=["fantasy"])
    )

    print_header(" 📚 WHAT ALEX SEES 📚 ")
    for book in await catalog.list_available_books("alex"):
        print_book(book)

    print_header(" 🔄 ALEX REQUESTS A SWAP 🔄 ")
    swap = await swaps.create_swap_request("alex", earthsea.id, dune.id)
    print_swap(swap)

    print_section("Jamie's notifications")
    for notification in await notifications.list_notifications("jamie"):
        print(f"  • {notification.title}: {notification.message}")

    print_section("Alex tries to offer Dune again")
    other = await catalog.add_book("jamie", BookCreate(title="Beloved", author="Toni Morrison"))
    try:
        await swaps.create_swap_request("alex", other.id, dune.id)
    except BookSwapError as e:
        print(f"{Colors.RED}Rejected ({e.code}): {e.detail}{Colors.ENDC}")

    print_header(" ✅ JAMIE APPROVES ✅ ")
    swap = await swaps.handle_swap_request(swap.id, "jamie", SwapDecision.APPROVE)
    print_swap(swap)
    try:
        await swaps.handle_swap_request(swap.id, "jamie", SwapDecision.APPROVE)
    except BookSwapError as e:
        print(f"{Colors.RED}Second approval rejected ({e.code}): {e.detail}{Colors.ENDC}")

    print_header(" 🤝 SWAP COMPLETED 🤝 ")
    swap = await swaps.complete_swap(swap.id, "alex")
    print_swap(swap)

    print_section("Alex's swap history")
    for entry in await swaps.get_swap_history("alex"):
        print(f"  • {entry.action.value} at {entry.timestamp:%Y-%m-%d %H:%M:%S}")

    print_section("What Alex sees now")
    for book in await catalog.list_available_books("alex"):
        print_book(book)

    await reviews.submit_review(earthsea.id, "alex", 5, "A quiet, wise coming-of-age story.")
    summary = await reviews.get_review_summary(earthsea.id)
    print_section("Reviews")
    print(f"  {earthsea.title}: {summary.average_rating} from {summary.review_count} review(s)")

    stats = await swaps.get_swap_stats("alex")
    print_header(" 📊 ALEX'S SWAP STATS 📊 ")
    print(stats.model_dump_json(indent=2))

if __name__ == "__main__":
    try:
        asyncio.run(simulate_book_swap())
    except KeyboardInterrupt:
        print(f"\n{Colors.RED}Demonstration interrupted by user.{Colors.ENDC}")
