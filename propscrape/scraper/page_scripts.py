"""JavaScript evaluated inside the listing site's pages.

``EXTRACTOR_INIT_SCRIPT`` is installed on the browser context with
``add_init_script`` so every document gets ``window.__propertyScraper``.
The fallback snippets are self-contained and only use the DOM, so they work
even when the init script failed to run on a page.
"""

import json

SELECTORS = {
    "property_cards": '[data-testid="property-card"], .property-card, .residential-card',
    "property_links": 'a[href*="/property/"], a[href*="/address/"]',
    "address": '.property-info-address, h1[class*="address"], [data-testid*="address"]',
    "price": '.property-price, .property-info__price, [class*="price"], [class*="Price"]',
    "features": '.property-features, [data-testid="property-features"]',
    "description": '.property-description, [data-testid="description"]',
    "agent": '.agent-details, [data-testid="agent"]',
    "images": '.property-image img, [data-testid="gallery"] img',
}

# How long the extractor waits for listing cards or detail anchors to render.
ELEMENT_WAIT_MS = 3000

EXTRACTOR_INIT_SCRIPT = """
(() => {
  if (window.__propertyScraper) return;

  const SELECTORS = %(selectors)s;
  const ELEMENT_WAIT_MS = %(wait_ms)d;
  const PROPERTY_TYPES = ['house', 'unit', 'apartment', 'townhouse', 'land'];

  const waitForElement = (selector, timeoutMs) => new Promise((resolve) => {
    const found = document.querySelector(selector);
    if (found) return resolve(found);
    const observer = new MutationObserver(() => {
      const el = document.querySelector(selector);
      if (el) {
        observer.disconnect();
        resolve(el);
      }
    });
    observer.observe(document.documentElement, { childList: true, subtree: true });
    setTimeout(() => { observer.disconnect(); resolve(null); }, timeoutMs);
  });

  const text = (selector, parent) => {
    const el = (parent || document).querySelector(selector);
    return el ? el.textContent.trim() : '';
  };

  const collectUrls = () => {
    const urls = new Set();
    document.querySelectorAll(SELECTORS.property_cards).forEach((card) => {
      card.querySelectorAll(SELECTORS.property_links).forEach((link) => {
        if (link.href) urls.add(link.href);
      });
    });
    document.querySelectorAll(SELECTORS.property_links).forEach((link) => {
      if (link.href) urls.add(link.href);
    });
    return Array.from(urls);
  };

  const roomCounts = () => {
    const body = document.body ? document.body.textContent : '';
    const grab = (re) => { const m = body.match(re); return m ? m[1] : ''; };
    return {
      bedrooms: grab(/(\\d+)\\s*bed/i),
      bathrooms: grab(/(\\d+)\\s*bath/i),
      carspaces: grab(/(\\d+)\\s*car/i),
    };
  };

  const featureCategories = () => {
    const features = { outdoor: [], indoor: [], heating: [], cooling: [], ecoFriendly: [] };
    document.querySelectorAll(SELECTORS.features).forEach((el) => {
      const raw = el.textContent.trim();
      const lower = raw.toLowerCase();
      if (lower.includes('outdoor') || lower.includes('garden')) features.outdoor.push(raw);
      if (lower.includes('heating')) features.heating.push(raw);
      if (lower.includes('cooling') || lower.includes('air')) features.cooling.push(raw);
      if (lower.includes('solar') || lower.includes('eco')) features.ecoFriendly.push(raw);
    });
    return features;
  };

  const agentInfo = () => {
    const agent = document.querySelector(SELECTORS.agent);
    if (!agent) return '';
    const parts = [
      '[class*="name"], [class*="Name"]',
      '[class*="agency"], [class*="Agency"]',
      '[class*="contact"], [class*="phone"]',
    ].map((sel) => text(sel, agent)).filter(Boolean);
    return parts.join(' - ');
  };

  const mainImage = () => {
    const images = Array.from(document.querySelectorAll(SELECTORS.images));
    if (!images.length) return '';
    const hero = images.find((img) => img.src && (
      img.width > 800 ||
      img.classList.contains('hero') ||
      img.classList.contains('main') ||
      img.closest('[class*="hero"], [class*="main"]')
    ));
    return hero ? hero.src : (images[0].src || '');
  };

  const propertyType = () => {
    const m = window.location.href.match(/property-(house|unit|apartment|townhouse|land)/i);
    if (m) return m[1].toLowerCase();
    const body = document.body ? document.body.textContent.toLowerCase() : '';
    return PROPERTY_TYPES.find((t) => body.includes(t)) || '';
  };

  const collectDetails = () => Object.assign(
    {
      url: window.location.href,
      address: text(SELECTORS.address),
      price: text(SELECTORS.price),
      description: text(SELECTORS.description),
      agent: agentInfo(),
      mainImage: mainImage(),
      propertyType: propertyType(),
      features: featureCategories(),
    },
    roomCounts(),
  );

  const handle = async (request) => {
    const mode = request && request.mode;
    try {
      if (mode === 'collectUrls') {
        await waitForElement(SELECTORS.property_cards, ELEMENT_WAIT_MS);
        return { data: { urls: collectUrls(), pageNumber: request.pageNumber }, success: true };
      }
      if (mode === 'collectDetails') {
        await waitForElement(SELECTORS.address, ELEMENT_WAIT_MS);
        return { data: collectDetails(), success: true };
      }
      return { data: null, success: false, error: 'Unknown extraction mode: ' + mode };
    } catch (err) {
      return { data: null, success: false, error: String((err && err.message) || err) };
    }
  };

  Object.defineProperty(window, '__propertyScraper', {
    value: Object.freeze({ handle }),
    configurable: false,
  });
})();
"""


def build_init_script() -> str:
    return EXTRACTOR_INIT_SCRIPT % {
        "selectors": json.dumps(SELECTORS),
        "wait_ms": ELEMENT_WAIT_MS,
    }


# Calls the injected extractor and races it against an in-page deadline.
BRIDGE_CALL_SCRIPT = """
async ({ request, timeoutMs }) => {
  const scraper = window.__propertyScraper;
  if (!scraper || typeof scraper.handle !== 'function') {
    return { data: null, success: false, error: 'extractor not installed' };
  }
  const deadline = new Promise((resolve) => setTimeout(
    () => resolve({ data: null, success: false, error: 'extractor timed out', timedOut: true }),
    timeoutMs,
  ));
  try {
    return await Promise.race([scraper.handle(request), deadline]);
  } catch (err) {
    return { data: null, success: false, error: String((err && err.message) || err) };
  }
}
"""

FALLBACK_URLS_SCRIPT = """
(selector) => {
  try {
    const urls = new Set();
    document.querySelectorAll(selector).forEach((link) => {
      if (link.href) urls.add(link.href);
    });
    return { urls: Array.from(urls) };
  } catch (err) {
    return { error: 'Fallback scraping failed: ' + ((err && err.message) || err) };
  }
}
"""

FALLBACK_DETAILS_SCRIPT = """
({ address, price }) => {
  try {
    const details = {};
    const addressEl = document.querySelector(address);
    details.address = addressEl ? addressEl.textContent.trim() : '';
    const priceEl = document.querySelector(price);
    details.price = priceEl ? priceEl.textContent.trim() : '';

    const body = document.body ? document.body.textContent : '';
    const bed = body.match(/(\\d+)\\s*bed/i);
    details.bedrooms = bed ? bed[1] : '';
    const bath = body.match(/(\\d+)\\s*bath/i);
    details.bathrooms = bath ? bath[1] : '';
    const car = body.match(/(\\d+)\\s*car/i);
    details.carspaces = car ? car[1] : '';

    const type = window.location.href.match(/property-(house|unit|apartment|townhouse|land)/i);
    details.propertyType = type ? type[1] : '';
    details.url = window.location.href;
    return details;
  } catch (err) {
    return {
      error: 'Fallback scraping failed: ' + ((err && err.message) || err),
      url: window.location.href,
    };
  }
}
"""

RATE_LIMIT_PROBE_SCRIPT = """
() => {
  const body = document.body ? document.body.innerText.toLowerCase() : '';
  return body.includes('429') ||
    body.includes('too many requests') ||
    body.includes('rate limit') ||
    body.includes('blocked') ||
    body.includes('try again later') ||
    Boolean(document.querySelector('.error-page'));
}
"""

__all__ = [
    "SELECTORS",
    "ELEMENT_WAIT_MS",
    "EXTRACTOR_INIT_SCRIPT",
    "build_init_script",
    "BRIDGE_CALL_SCRIPT",
    "FALLBACK_URLS_SCRIPT",
    "FALLBACK_DETAILS_SCRIPT",
    "RATE_LIMIT_PROBE_SCRIPT",
]
