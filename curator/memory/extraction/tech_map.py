"""
Technology preference lookup tables.

Maps canonical package names and well-known file names to global preference
keys. Adding a mapping is a one-line change here; the structural miner only
reads these tables.
"""

from __future__ import annotations

import re
from typing import NamedTuple


class Preference(NamedTuple):
    key: str
    description: str


# Manifest dependency name -> preference
PACKAGE_PREFERENCES: dict[str, Preference] = {
    # Web frameworks
    "next": Preference("pref-framework-nextjs", "Next.js for React apps"),
    "nuxt": Preference("pref-framework-nuxt", "Nuxt for Vue apps"),
    "svelte": Preference("pref-framework-svelte", "Svelte/SvelteKit"),
    "@sveltejs/kit": Preference("pref-framework-sveltekit", "SvelteKit"),
    "express": Preference("pref-framework-express", "Express.js for Node backend"),
    "fastify": Preference("pref-framework-fastify", "Fastify for Node backend"),
    "hono": Preference("pref-framework-hono", "Hono for edge/serverless"),
    "koa": Preference("pref-framework-koa", "Koa for Node backend"),
    "remix": Preference("pref-framework-remix", "Remix for full-stack React"),
    "astro": Preference("pref-framework-astro", "Astro for content sites"),
    "gatsby": Preference("pref-framework-gatsby", "Gatsby for static React sites"),
    # Frontend libraries
    "react": Preference("pref-framework-react", "React"),
    "vue": Preference("pref-framework-vue", "Vue.js"),
    "angular": Preference("pref-framework-angular", "Angular"),
    "@angular/core": Preference("pref-framework-angular", "Angular"),
    "solid-js": Preference("pref-framework-solidjs", "SolidJS"),
    # CSS/style
    "tailwindcss": Preference("pref-style-tailwind", "Tailwind CSS"),
    "bootstrap": Preference("pref-style-bootstrap", "Bootstrap"),
    "styled-components": Preference("pref-style-styled-components", "styled-components (CSS-in-JS)"),
    "@emotion/react": Preference("pref-style-emotion", "Emotion (CSS-in-JS)"),
    "sass": Preference("pref-style-sass", "Sass/SCSS"),
    # Testing
    "vitest": Preference("pref-tool-vitest", "Vitest for testing"),
    "jest": Preference("pref-tool-jest", "Jest for testing"),
    "mocha": Preference("pref-tool-mocha", "Mocha for testing"),
    "playwright": Preference("pref-tool-playwright", "Playwright for E2E testing"),
    "@playwright/test": Preference("pref-tool-playwright", "Playwright for E2E testing"),
    "cypress": Preference("pref-tool-cypress", "Cypress for E2E testing"),
    # Build/bundlers
    "vite": Preference("pref-tool-vite", "Vite for bundling"),
    "webpack": Preference("pref-tool-webpack", "Webpack for bundling"),
    "esbuild": Preference("pref-tool-esbuild", "esbuild for bundling"),
    "turbo": Preference("pref-tool-turbo", "Turborepo for monorepo"),
    # ORM/DB
    "drizzle-orm": Preference("pref-tool-drizzle", "Drizzle ORM"),
    "prisma": Preference("pref-tool-prisma", "Prisma ORM"),
    "@prisma/client": Preference("pref-tool-prisma", "Prisma ORM"),
    "mongoose": Preference("pref-tool-mongoose", "Mongoose for MongoDB"),
    "typeorm": Preference("pref-tool-typeorm", "TypeORM"),
    "sequelize": Preference("pref-tool-sequelize", "Sequelize ORM"),
    "knex": Preference("pref-tool-knex", "Knex.js query builder"),
    # Linting/formatting
    "eslint": Preference("pref-tool-eslint", "ESLint for linting"),
    "biome": Preference("pref-tool-biome", "Biome for linting/formatting"),
    "@biomejs/biome": Preference("pref-tool-biome", "Biome for linting/formatting"),
    "prettier": Preference("pref-tool-prettier", "Prettier for formatting"),
    # State management
    "zustand": Preference("pref-tool-zustand", "Zustand for state management"),
    "redux": Preference("pref-tool-redux", "Redux for state management"),
    "@reduxjs/toolkit": Preference("pref-tool-redux", "Redux Toolkit"),
    "jotai": Preference("pref-tool-jotai", "Jotai for atomic state"),
    # Auth
    "next-auth": Preference("pref-tool-nextauth", "NextAuth.js for authentication"),
    "@auth/core": Preference("pref-tool-authjs", "Auth.js for authentication"),
    "lucia": Preference("pref-tool-lucia", "Lucia for authentication"),
    "passport": Preference("pref-tool-passport", "Passport.js for auth"),
    # Language
    "typescript": Preference("pref-lang-typescript", "TypeScript for Node.js projects"),
}

# Config file name -> deployment preference
DEPLOY_CONFIG_PREFERENCES: dict[str, Preference] = {
    "wrangler.toml": Preference("pref-deploy-cloudflare", "Cloudflare Workers via wrangler"),
    "wrangler.jsonc": Preference("pref-deploy-cloudflare", "Cloudflare Workers via wrangler"),
    "wrangler.json": Preference("pref-deploy-cloudflare", "Cloudflare Workers via wrangler"),
    "vercel.json": Preference("pref-deploy-vercel", "Vercel for deployment"),
    "netlify.toml": Preference("pref-deploy-netlify", "Netlify for deployment"),
    "fly.toml": Preference("pref-deploy-fly", "Fly.io for deployment"),
    "render.yaml": Preference("pref-deploy-render", "Render for deployment"),
    "Dockerfile": Preference("pref-deploy-docker", "Docker containers"),
    "docker-compose.yml": Preference("pref-deploy-docker-compose", "Docker Compose"),
    "docker-compose.yaml": Preference("pref-deploy-docker-compose", "Docker Compose"),
    "serverless.yml": Preference("pref-deploy-serverless", "Serverless Framework"),
    "serverless.yaml": Preference("pref-deploy-serverless", "Serverless Framework"),
    "sam.yaml": Preference("pref-deploy-aws-sam", "AWS SAM"),
    "template.yaml": Preference("pref-deploy-aws-sam", "AWS SAM"),
    "cdk.json": Preference("pref-deploy-aws-cdk", "AWS CDK"),
    "app.yaml": Preference("pref-deploy-gcloud", "Google Cloud App Engine"),
    "firebase.json": Preference("pref-deploy-firebase", "Firebase"),
    "railway.json": Preference("pref-deploy-railway", "Railway for deployment"),
    "Procfile": Preference("pref-deploy-heroku", "Heroku"),
}

# Project manifest file name -> language preference
LANGUAGE_MANIFESTS: dict[str, Preference] = {
    "requirements.txt": Preference("pref-lang-python", "Python"),
    "pyproject.toml": Preference("pref-lang-python", "Python"),
    "setup.py": Preference("pref-lang-python", "Python"),
    "Pipfile": Preference("pref-lang-python", "Python"),
    "Gemfile": Preference("pref-lang-ruby", "Ruby"),
    "composer.json": Preference("pref-lang-php", "PHP"),
    "go.mod": Preference("pref-lang-go", "Go"),
    "Cargo.toml": Preference("pref-lang-rust", "Rust"),
}

# Manifest file name -> frameworks detected by name in its content
MANIFEST_FRAMEWORKS: dict[str, list[tuple[re.Pattern, Preference]]] = {
    "requirements.txt": [
        (re.compile(r"\bdjango\b", re.I), Preference("pref-framework-django", "Django for Python web")),
        (re.compile(r"\bflask\b", re.I), Preference("pref-framework-flask", "Flask for Python web")),
        (re.compile(r"\bfastapi\b", re.I), Preference("pref-framework-fastapi", "FastAPI for Python APIs")),
        (re.compile(r"\btorch\b|\bpytorch\b", re.I), Preference("pref-framework-pytorch", "PyTorch for ML")),
        (re.compile(r"\btensorflow\b", re.I), Preference("pref-framework-tensorflow", "TensorFlow for ML")),
    ],
    "Gemfile": [
        (re.compile(r"\brails\b", re.I), Preference("pref-framework-rails", "Ruby on Rails")),
    ],
    "composer.json": [
        (re.compile(r"laravel", re.I), Preference("pref-framework-laravel", "Laravel for PHP")),
    ],
}
MANIFEST_FRAMEWORKS["pyproject.toml"] = MANIFEST_FRAMEWORKS["requirements.txt"]


def lookup_package(name: str) -> Preference | None:
    return PACKAGE_PREFERENCES.get(name)


def lookup_deploy_config(filename: str) -> Preference | None:
    return DEPLOY_CONFIG_PREFERENCES.get(filename)
